from site_deploy.cli import main

main()
