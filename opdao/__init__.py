"""
Operator DAO Package

Core imports are lazily loaded so that submodules stay importable on their own.
For direct module access, import from submodules:

    from opdao.dao import OperatorDAO
    from opdao.governance import VotingEngine
    from opdao.exceptions import AlreadyVotedError
"""

__version__ = "0.1.0"


# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'OperatorDAO':
        from .dao import OperatorDAO
        return OperatorDAO
    elif name == 'TxResult':
        from .dao import TxResult
        return TxResult
    elif name == 'load_config':
        from .config import load_config
        return load_config
    elif name == 'DAOError':
        from .exceptions import DAOError
        return DAOError
    raise AttributeError(f"module 'opdao' has no attribute {name!r}")

__all__ = ['OperatorDAO', 'TxResult', 'load_config', 'DAOError']
