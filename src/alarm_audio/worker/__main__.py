from alarm_audio.worker.main import run

run()
