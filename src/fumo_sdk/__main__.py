from fumo_sdk.cli.main import entrypoint

entrypoint()
