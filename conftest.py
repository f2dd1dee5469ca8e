# Root conftest: puts the project root on sys.path so tests import
# directory, housekeeping and scripts without an editable install.
