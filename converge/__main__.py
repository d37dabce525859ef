from converge.main import cli

cli()
