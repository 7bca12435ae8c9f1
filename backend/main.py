from rebooked import create_app

app = create_app()
