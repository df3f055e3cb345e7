from .store import Store

_store = Store()


def get_store() -> Store:
    # Stateless wrapper over the pool; tests override this dependency.
    return _store
