"""
Utility subpackage for the ICP engine:
- config_loader   → YAML loader, overrides & mapping onto search arguments
- logging_utils   → unified logger setup
"""
