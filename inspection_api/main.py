# inspection_api/main.py
#
# uvicorn inspection_api.main:app --reload
from inspection_api.app_factory import create_app

app = create_app()
