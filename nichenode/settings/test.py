from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

RAZORPAY = {
    'KEY_ID': 'rzp_test_key',
    'KEY_SECRET': 's3cr3t',
    'WEBHOOK_SECRET': 'whsec',
    'BASE_URL': 'https://api.razorpay.test',
    'TIMEOUT': 5,
}
