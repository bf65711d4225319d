from parcelops import create_app

app = create_app()
