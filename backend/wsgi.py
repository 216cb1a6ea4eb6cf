from stellarpoints import create_app

app = create_app()
