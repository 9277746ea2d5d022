"""One module per ``edgesite`` subcommand."""
