from vs_demo.cli import main

main()
