import sys
import os

# Add your project directory to the sys.path
project_home = '/home/yourusername/rental-agreements'
if project_home not in sys.path:
    sys.path.insert(0, project_home)

# Load environment variables before config.Config is read
from dotenv import load_dotenv
dotenv_path = os.path.join(project_home, '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

# Set environment variable for Flask
os.environ['FLASK_ENV'] = 'production'

# Import your Flask app
from app import create_app

application = create_app()
