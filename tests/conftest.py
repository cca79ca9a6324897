import os

# Point the app at SQLite before repairshop.config builds its settings.
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('TURNSTILE_SECRET_KEY', '')
os.environ.setdefault('RESEND_API_KEY', '')
