"""Line rules, bet-ID mapping, edge calculation and the selection refresh job."""
