from livepeer_stress.cli import run_cli

run_cli()
