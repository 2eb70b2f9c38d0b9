from sports_pipeline.main import run

run()
