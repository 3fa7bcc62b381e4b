from donorvault import create_app

app = create_app()
