"""Entry point: python -m cadence"""

from cadence.main import main

if __name__ == "__main__":
    main()
