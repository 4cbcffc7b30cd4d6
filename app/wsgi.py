from app.formhub import create_app

app = create_app()
