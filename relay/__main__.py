import uvicorn

from relay.config import load_settings

if __name__ == "__main__":
    uvicorn.run("relay.main:app", host="0.0.0.0", port=load_settings().port)
