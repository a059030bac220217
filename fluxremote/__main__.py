"""Allow running as: python -m fluxremote"""
from fluxremote.main import run

if __name__ == "__main__":
    run()
