from dataflow_server.cli import cli

cli()
