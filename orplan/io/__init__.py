"""
ORPLAN IO - model snapshots and optimizer configuration
"""

from .snapshot import load_model, model_from_dict, save_model
from .config_loader import config_from_dict, load_config

__all__ = ["load_model", "model_from_dict", "save_model", "config_from_dict", "load_config"]
