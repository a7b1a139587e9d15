from delayq.cli.app import app

app()
