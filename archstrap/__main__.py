# archstrap/__main__.py
from archstrap.cli import main

if __name__ == "__main__":
    main()
