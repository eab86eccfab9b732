from apexflow import create_app

app = create_app()
