from fc_storage_check.run_verification import main

if __name__ == "__main__":
    main()
