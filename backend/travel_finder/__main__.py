from travel_finder.main import cli

cli()
