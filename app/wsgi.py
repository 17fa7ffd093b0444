from app.agritrace import create_app

app = create_app()
