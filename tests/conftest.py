import sys
import os

# Add keyupdate/ to path so tests can import the migration modules directly
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "keyupdate"))

# Add scripts/ to path so tests can import script modules directly
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))

# Add tests/ to path so test modules can share key_fixtures
sys.path.insert(0, os.path.dirname(__file__))
