import os

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'your-secret-key-here-make-it-long'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance', 'splitledger.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'IDR')

    # Window in which an identical (group, from, to, amount) payment is
    # treated as a double submission
    PAYMENT_DEBOUNCE_SECONDS = int(os.environ.get('PAYMENT_DEBOUNCE_SECONDS', 10))

    # Who absorbs the cent left over by an even split: 'first' or 'last'
    SPLIT_REMAINDER_TO = os.environ.get('SPLIT_REMAINDER_TO', 'first')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_LEVEL = 'DEBUG'
