from delivery_hub import create_app

app = create_app()
