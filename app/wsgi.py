from app.docreg import create_app

app = create_app()
