### DEFAULTS ###

url = "https://carto.lausanne.ch/"
filename = "screenshot.jpg"
quality = 90
# see Tab.wait_for() for the list of lifecycle events
wait_event = "networkIdle"
wait_timeout = 60.0
device = "ipad"
viewport = (1024, 768)
viewport_scale = 2.0
user_agent = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
