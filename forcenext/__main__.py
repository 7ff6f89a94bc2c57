from forcenext.main import main

main()
