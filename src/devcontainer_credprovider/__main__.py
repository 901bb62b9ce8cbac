from devcontainer_credprovider.app import main

main()
