# repair_planner/definitions.py
import os
import sys
from pathlib import Path

if getattr(sys, 'frozen', False):
    ROOT_DIR = os.path.dirname(sys.executable)
else:
    ROOT_DIR = os.path.dirname(os.path.abspath(__file__))

CONFIG_DIR = Path(os.path.join(ROOT_DIR, 'config'))
UTILS_DIR = Path(os.path.join(ROOT_DIR, 'utils'))
LOG_DIR = Path(os.getenv('LOG_DIR') or os.path.join(os.getcwd(), 'logs'))
