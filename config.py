import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    # Environment
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///rentals.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Supabase storage for generated and signed agreement documents
    SUPABASE_URL = os.getenv('SUPABASE_URL')
    SUPABASE_KEY = os.getenv('SUPABASE_KEY')
    AGREEMENT_FILES_BUCKET = os.getenv('AGREEMENT_FILES_BUCKET', 'files')

    # Evia Sign configuration
    EVIA_API_BASE_URL = os.getenv('EVIA_API_BASE_URL', 'https://evia.enadocapp.com/_apis')
    EVIA_ACCESS_TOKEN = os.getenv('EVIA_ACCESS_TOKEN', '')
    EVIA_REFRESH_TOKEN = os.getenv('EVIA_REFRESH_TOKEN', '')
    EVIA_CLIENT_ID = os.getenv('EVIA_CLIENT_ID', '')
    EVIA_CLIENT_SECRET = os.getenv('EVIA_CLIENT_SECRET', '')
    # Without a webhook URL status updates only arrive through manual refresh
    EVIA_WEBHOOK_URL = os.getenv('EVIA_WEBHOOK_URL')

    # Property type whose agreements must name a unit
    MULTI_UNIT_PROPERTY_TYPE = os.getenv('MULTI_UNIT_PROPERTY_TYPE', 'apartment')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    EVIA_ACCESS_TOKEN = ''
    EVIA_WEBHOOK_URL = 'https://rentals.example.com/agreements/webhook/evia-sign'
