from buildforge.cli import main

main()
