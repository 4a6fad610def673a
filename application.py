"""
Elastic Beanstalk entry point for the TrainerMatch FastAPI application.
This file is required by AWS Elastic Beanstalk to properly start the application.
"""

from trainermatch.main import app

# Elastic Beanstalk looks for 'application' object
application = app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(application, host="0.0.0.0", port=8000)
