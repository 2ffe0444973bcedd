from portal_export.cli import main

main()
