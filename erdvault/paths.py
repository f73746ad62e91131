import os


def get_data_dir():
    # ERDVAULT_HOME wins so tests and portable installs can relocate the store.
    base = os.environ.get("ERDVAULT_HOME") or os.path.join(os.path.expanduser("~"), ".erdvault")
    os.makedirs(base, exist_ok=True)
    return base


def get_db_path():
    return os.path.join(get_data_dir(), "erdvault.db")
