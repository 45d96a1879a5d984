from sitegen.main import main

main()
