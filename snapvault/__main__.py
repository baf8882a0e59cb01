from snapvault.cli import run

run()
