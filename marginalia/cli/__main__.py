"""Allow ``python -m marginalia.cli`` execution."""

from marginalia.cli.commands import main

main()
