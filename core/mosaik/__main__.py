from mosaik.cli import main

main()
