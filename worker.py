"""
Queue worker entry point: python worker.py
"""

from app.worker import run

if __name__ == "__main__":
    run()
