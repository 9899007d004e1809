from app.eqpqiq import create_app

app = create_app()
