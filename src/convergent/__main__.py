from convergent.cli.main import main

main()
