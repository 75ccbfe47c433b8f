"""Document store abstraction and adapters.

:mod:`store.base` defines the abstract client/database/container handles;
:mod:`store.memory` and :mod:`store.sqlite` implement them.
"""
