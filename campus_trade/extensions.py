from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo

# Initialize extensions (bound to the app in create_app)
mongo = PyMongo()
jwt = JWTManager()
cors = CORS()
